"""HTTP service exposing the knowledge graph."""
