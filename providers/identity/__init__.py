# providers/identity/__init__.py
# QLSync - per-site identity matchers (validate a cookie owner, find its remote variable)
