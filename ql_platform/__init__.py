# ql_platform/__init__.py
# QLSync - platform layer (config, storage, cookies, vault, orchestrator)
