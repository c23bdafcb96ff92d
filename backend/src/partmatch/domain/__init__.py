"""Domain ports for partmatch's external collaborators."""
