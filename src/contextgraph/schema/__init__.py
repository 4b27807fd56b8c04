"""Entity-type introspection: the field vocabulary, document inference
heuristics and the `SchemaCatalog` (see `catalog.py`)."""
