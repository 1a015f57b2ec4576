APP_NAME = "gotohp"
APP_VERSION = "0.6.1"
