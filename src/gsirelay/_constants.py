"""Internal constants shared across the package."""

DEFAULT_HTTP_HOST = "0.0.0.0"
DEFAULT_HTTP_PORT = 3005
DEFAULT_AUTH_TOKEN = "CHANGE_ME_TO_A_RANDOM_SECRET"
DEFAULT_SOURCE = "win-gaming-pc"
DEFAULT_RELAY_CHANNEL = "dota2:gsi:live"
DEFAULT_RAW_DIR = "./raw"
DEFAULT_RAW_MAX_MB = 100

# Retained messages per subscriber before its backlog is dropped.
DEFAULT_BROADCAST_CAPACITY = 1024
# Envelopes waiting for the append-log writer before new ones are dropped.
DEFAULT_RAW_QUEUE_SIZE = 1024

LISTENER_NAME = "dota2-gsi"
RAW_FILE_PREFIX = "dota2_gsi"
RAW_FILE_EXT = ".jsonl"

MQTT_PORT = 1883
MQTTS_PORT = 8883
