# backend/wsgi.py
from dukaan_pos import create_app

app = create_app()
