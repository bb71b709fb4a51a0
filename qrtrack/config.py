import os


class Config:
    """Configuration for the Flask app, the database and the QR lifecycle.

    - ``SQLALCHEMY_DATABASE_URI``: defaults to a local SQLite file named
      ``qrtrack.db`` but can be overridden via the ``DATABASE_URL``
      environment variable.
    - ``SQLALCHEMY_TRACK_MODIFICATIONS``: disables the event system which
      otherwise adds overhead.
    - ``SECRET_KEY``: used by Flask for session signing.  In production you
      should set this to a strong random value via the environment.
    - ``JOB_SECRET``: shared secret the scheduled sweep trigger must send in
      the ``X-Job-Secret`` header.  When unset the trigger rejects every call.
    - ``BASE_URL``: prefix for the scan URL encoded into each QR image.  Falls
      back to the host of the creating request.
    - ``QR_EXPIRY_MODE``: ``fixed`` starts the expiry countdown at creation,
      ``deferred`` starts it on the first scan.
    - ``QR_EXPIRE_HOURS`` / ``QR_FLAG_THRESHOLD_HOURS``: defaults applied when
      a create request leaves them out.
    """

    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///qrtrack.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SECRET_KEY = os.getenv("SECRET_KEY", "change-me")
    JOB_SECRET = os.getenv("JOB_SECRET", "")
    BASE_URL = os.getenv("BASE_URL", "")
    QR_EXPIRY_MODE = os.getenv("QR_EXPIRY_MODE", "fixed")
    QR_EXPIRE_HOURS = float(os.getenv("QR_EXPIRE_HOURS", "12"))
    QR_FLAG_THRESHOLD_HOURS = float(os.getenv("QR_FLAG_THRESHOLD_HOURS", "3"))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
