"""
Default configuration values for lodestar.

Durations are in seconds.
"""

# Browser defaults
DEFAULT_PRODUCT = "chrome"
DEFAULT_HEADLESS = True
DEFAULT_LAUNCH_TIMEOUT = 30.0
DEFAULT_CLOSE_TIMEOUT = 5.0

# Page defaults
DEFAULT_TIMEOUT = 30.0
DEFAULT_WAIT_UNTIL = "networkidle2"
DEFAULT_IDLE_TIME = 0.5
DEFAULT_POLLING_INTERVAL = 0.1

# Protocol
PROTOCOL_VERSION = "1.3"
TARGET_CLOSED_RESPONSE = "Target is closing"
MAX_MESSAGE_SIZE = 100 * 1024 * 1024

# Startup race handling
SINGLETON_LOCK_FILE = "SingletonLock"
PROFILE_LOCKED_SIGNATURE = "ProcessSingleton"
MISSING_LIBRARY_SIGNATURE = "error while loading shared libraries"
WINDOWS_TRANSIENT_EXIT_CODE = 21
MAX_TRANSIENT_EXIT_RETRIES = 3
DIAGNOSTIC_TAIL_LINES = 50

# Arguments every launch gets
BASE_ARGS: list[str] = [
    "--remote-debugging-port=0",
    "--no-first-run",
    "--password-store=basic",
    "--use-mock-keychain",
]

# Added by the "hardened" launch preset (chrome only)
HARDENED_CHROME_ARGS: list[str] = [
    # First run and default checks
    "--disable-first-run-ui",
    "--no-service-autorun",
    "--no-default-browser-check",
    "--disable-search-engine-choice-screen",
    "--disable-sync",
    # User gestures and prompts
    "--no-user-gesture-required",
    "--allow-pre-commit-input",
    "--deny-permission-prompts",
    "--disable-popup-blocking",
    "--disable-prompt-on-repost",
    "--disable-input-event-activation-protection",
    # Plugins, extensions and default apps
    "--disable-plugins",
    "--disable-extensions",
    "--disable-default-apps",
    "--disable-component-update",
    "--disable-component-extensions-with-background-pages",
    # Telemetry
    "--incognito",
    "--no-pings",
    "--disable-stack-profiler",
    "--disable-field-trial-config",
    "--disable-domain-reliability",
    "--disable-logging",
    "--metrics-recording-only",
    # Crash reporting
    "--noerrdialogs",
    "--hide-crash-restore-bubble",
    "--disable-crash-reporter",
    "--disable-breakpad",
    "--disable-auto-reload",
    # Caching and background work
    "--aggressive-cache-discard",
    "--disable-back-forward-cache",
    "--disable-background-networking",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-hang-monitor",
    "--disable-ipc-flooding-protection",
    # Rendering
    "--force-color-profile=srgb",
    "--disable-renderer-backgrounding",
    "--disable-software-rasterizer",
    "--disable-gpu",
    "--disable-accelerated-2d-canvas",
    # Extra APIs
    "--no-experiments",
    "--mute-audio",
    "--disable-dinosaur-easter-egg",
    "--disable-translate",
    "--disable-virtual-keyboard",
    "--disable-touch-drag-drop",
    "--disable-volume-adjust-sound",
    "--disable-audio-input",
    "--disable-audio-output",
    "--disable-notifications",
    "--disable-file-system",
    "--disable-speech-api",
    "--disable-speech-synthesis-api",
    "--disable-remote-playback-api",
    "--disable-presentation-api",
    "--disable-shared-workers",
    "--disable-features=AcceptCHFrame,Translate,BackForwardCache,MediaRouter,OptimizationHints,DialMediaRouteProvider",
]

TRANSPARENT_BACKGROUND_ARG = "--default-background-color=00000000"

# Environment variable prefix
ENV_PREFIX = "LODESTAR_"
