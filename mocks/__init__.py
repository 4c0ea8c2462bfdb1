"""In-process engine doubles and a virtual-clock scheduler."""
