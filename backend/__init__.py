"""
plangraph backend - HTTP surface for the graph analytics engine.

This package provides a FastAPI backend that reads planning entities from
the file-backed entity store and serves every analysis as JSON (or as a
text, DOT or Mermaid rendering where one exists).
"""
