import os
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
DB_DIR = os.path.join(BASE_DIR, "db")
CONVERSATIONS_DIR = os.path.join(DB_DIR, "conversations")

PROMPTS_DIR = os.path.join(BASE_DIR, "prompts")
DEFAULT_SYSTEM_PROMPT_PATH = os.path.join(PROMPTS_DIR, "tool_router_system_prompt.md")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
