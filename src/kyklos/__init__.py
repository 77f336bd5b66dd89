"""
Kyklos: time-window based replica scaling for Kubernetes Deployments.
"""

__version__ = "0.1.0"
