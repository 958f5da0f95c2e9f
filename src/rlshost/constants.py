LOG_FORMAT = "%(levelname)-5s %(asctime)-15s %(name)s:%(funcName)s:%(lineno)d - %(message)s"

RLS_CONFIG_FILE = "rls.yml"
DEPRECATED_RLS_TOML = "rls.toml"
DEPRECATED_ENV_VARS = ("RLS_PATH", "RLS_ROOT")

RUST_SRC_PATH_VAR = "RUST_SRC_PATH"
RUST_SRC_PATH_SUFFIX = "/lib/rustlib/src/rust/src"
CARGO_BIN_DIR = ".cargo/bin"
HOME_FALLBACK = "~"

DOCUMENT_SELECTOR = ("rust",)
CLIENT_NAME = "Rust Language Server"

# status bar labels
STATUS_STARTING = "RLS: starting up"
STATUS_START_FAILED = "RLS could not be started"
STATUS_WORKING = "RLS: working"
STATUS_DONE = "RLS: done"
