"""Application layer: video sources, processing, and batch orchestration."""
