"""
stockdesk/blueprints

One package per resource family. Each package exposes its Blueprint object(s)
from __init__.py; routes live in routes.py.
"""
