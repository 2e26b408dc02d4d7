# config.py


class Config:
    DEBUG = False
    TESTING = False

    IMPORT_BATCH_SIZE = 100
    SKU_WORKERS = 8
    CLIENT_IMPORT_CHUNK_ROWS = 200
    CLIENT_IMPORT_SINGLE_CALL_MAX_ROWS = 100


class ProductionConfig(Config):
    pass


class DevelopmentConfig(Config):
    DEBUG = True


class TestingConfig(Config):
    TESTING = True
    DEBUG = True
