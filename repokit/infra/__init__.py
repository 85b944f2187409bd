"""Infrastructure: logging and database engine setup."""
