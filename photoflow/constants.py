class Constants:
    ENV_PREFIX = "PHOTOFLOW"

    ALLOWED_INPUT_FILE_EXTENSIONS = [".jpg", ".jpeg", ".png"]
    THUMBNAIL_SIZES = [300]
    THUMBNAIL_QUALITY = 85
    DEFAULT_MEDIA_TYPE = "application/octet-stream"

    POLL_INTERVAL_SECONDS = 5.0
    PROCESSING_TIMEOUT_SECONDS = 60.0
    MAX_WORKERS = 4

    MIN_RATING = 1
    MAX_RATING = 5

    ERROR_FILE_SUFFIX = ".error.txt"
    MAX_FILENAME_BYTES = 255
    # user ids are stored as signed 64-bit integers
    MAX_USER_ID = 2**63 - 1
    GPS_DECIMAL_PLACES = 8

    # EXIF tag ids
    EXIF_IFD = 0x8769
    GPS_IFD = 0x8825
    TAG_DATETIME_ORIGINAL = 0x9003
    TAG_GPS_LATITUDE_REF = 1
    TAG_GPS_LATITUDE = 2
    TAG_GPS_LONGITUDE_REF = 3
    TAG_GPS_LONGITUDE = 4
    EXIF_DATETIME_FORMAT = "%Y:%m:%d %H:%M:%S"
