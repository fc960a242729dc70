"""
Entry point for Flask.

Usage (from project root):

    flask --app run.py db init        # first time only
    flask --app run.py db migrate
    flask --app run.py db upgrade
    flask --app run.py seed-permissions
    flask --app run.py create-admin
    flask --app run.py --debug run

"""

from stockdesk import create_app

# WSGI application object. `flask run` and WSGI servers look for this `app` variable.
app = create_app()

if __name__ == "__main__":
    # Dev only; use `flask run` or a WSGI server otherwise.
    app.run(debug=True)
