LOG_LEVELS = {
    "quiet": 0,
    "simple": 1,
    "full": 2,
    "debug": 3,
}

LOG_LEVEL_ALIASES = {
    "messages": "simple",
    "stream": "full",
}

CLI_CHANNEL = "cli"
CLI_CHAT_ID = "direct"
CRON_CHANNEL = "cron"
EXIT_COMMANDS = {"exit", "quit", "/exit", "/quit", ":q"}

DEFAULT_WORKSPACE = "~/.nanobot/workspace"
LOG_FILE_NAME = "nanobot.log"
