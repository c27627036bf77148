STATE_DIR_NAME = ".asset_pipeline"
CONFIG_FILE = "config.yaml"
PIPELINES_DIR = "pipelines"
WATERMARKS_FILE = "watermarks.json"

DEFAULT_DEBUG_DIR = "private"
DEFAULT_SERVER_HOST = "127.0.0.1"
DEFAULT_SERVER_PORT = 3000
DEFAULT_WATCH_DEBOUNCE_SECONDS = 0.2

LIVERELOAD_PATH = "/__livereload"

EXIT_OK = 0
EXIT_TASK_FAILED = 1
EXIT_CONFIG_ERROR = 2
