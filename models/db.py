from flask_sqlalchemy import SQLAlchemy

from utils import clock

db = SQLAlchemy()


def utcnow():
    return clock.utcnow()
