# providers/__init__.py
# QLSync - remote collaborators (QingLong panel, identity services)
