"""MoveMatrix web interface: Flask API and SQLite persistence."""
