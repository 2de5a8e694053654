"""Local vision-model feature extraction."""
