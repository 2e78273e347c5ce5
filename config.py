class Config:
    """ Fixed service settings, loaded into the Flask app config """

    HOST = "0.0.0.0"
    PORT = 8080
    LOG_LEVEL = "INFO"
    LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
    THREADED = True
