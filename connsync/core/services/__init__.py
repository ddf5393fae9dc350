"""Application services composed by the command handler."""
