from dotenv import load_dotenv

import os

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL or DATABASE_URL == "":
    raise ValueError("DATABASE_URL not set")

SECRET_KEY = os.getenv("SECRET_KEY")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE") or None

SQL_ECHO = os.getenv("SQL_ECHO", "").lower() in {"1", "true", "yes", "on"}
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

RENTAL_NUMBER_PREFIX = os.getenv("RENTAL_NUMBER_PREFIX", "RNT")
RETURN_PAYMENT_METHOD = os.getenv("RETURN_PAYMENT_METHOD", "cash")
