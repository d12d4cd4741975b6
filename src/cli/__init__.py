"""Command-line tools for StoryShelf.

- ``python -m src.cli process <book_id>`` runs a processing job locally.
- ``python -m src.cli trigger <book_id>`` calls the remote processing trigger.
- ``python -m src.cli reset <book_id>`` restarts a failed book.
"""
