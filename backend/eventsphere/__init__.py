"""EventSphere upload security gate and notification workers."""
