import os

# Tests run against the in-memory store, queue, storage and search index.
os.environ.setdefault("POSTBOARD_USE_IN_MEMORY_BACKENDS", "1")
