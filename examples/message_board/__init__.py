"""Sample message board built on kiln."""
