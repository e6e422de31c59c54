"""Result store and prompt summaries."""
