"""
LiveDetect - Live camera client for a remote object-detection service

Captures webcam frames on a fixed cadence, sends them to the detection
backend, keeps the latest annotated image and a rolling tally history.
"""

__version__ = "1.0.0"
__author__ = "LiveDetect Team"
