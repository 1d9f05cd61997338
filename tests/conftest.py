import os

# Keep litellm from fetching its remote model cost map at import time; offline,
# its background retry thread can deadlock with the test thread's import.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")
