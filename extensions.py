# extensions.py - shared Flask extensions (init_app is called from app.create_app)
from flask_login import LoginManager
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
login_manager = LoginManager()
