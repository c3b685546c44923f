# backend/wsgi.py
from procure import create_app

app = create_app()
