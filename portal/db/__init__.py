from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

def init_db(app, database_path: str = 'db.sqlite'):
    """Initialize the database with the app"""
    app.config['SQLALCHEMY_DATABASE_URI'] = f'sqlite:///{database_path}'
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    db.init_app(app)

    # models must be registered on the metadata before create_all
    from portal.db import models  # noqa: F401

    # Create tables if they don't exist
    with app.app_context():
        db.create_all()
