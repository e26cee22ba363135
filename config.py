# config.py
# Configuration settings for the liveness task service

import os
import logging


class Config:
    # Logging
    LOGGING_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    LOG_LEVEL = getattr(logging, os.getenv("LIVENESS_LOG_LEVEL", "INFO").upper(), logging.INFO)

    # Server
    HOST = os.getenv("FLASK_HOST", "127.0.0.1")
    PORT = int(os.getenv("FLASK_PORT", "5002"))
    SECRET_KEY = os.getenv("FLASK_SECRET_KEY", "dev")
    SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", "60"))

    # Task progression
    TASK_COMPLETION_TIME_MS = 3000          # Hold time required for every task

    # Head rotation (normalized landmark space)
    MAX_HEAD_ROTATION = 0.2                 # Nose offset that maps to 100% rotation
    MOUTH_OPEN_DISTANCE = 0.04              # Lip gap that maps to 100% openness
    HEAD_TURN_THRESHOLD_PERCENTAGE = 15
    MOUTH_OPEN_THRESHOLD_PERCENTAGE = 40
    MIRROR_FRAMES = False                   # Flip JPEG frames before landmark extraction

    # MediaPipe FaceMesh landmark indices
    LEFT_EYE_INDEX = 33
    RIGHT_EYE_INDEX = 263
    NOSE_TIP_INDEX = 1
    UPPER_LIP_INDEX = 13
    LOWER_LIP_INDEX = 14

    # Breath detection
    INITIAL_BREATH_THRESHOLD = 0.001
    INITIAL_SILENCE_THRESHOLD = 0.005
    BREATH_FREQ_RANGE = (50, 3000)          # Hz
    AUDIO_BUFFER_SIZE = 1024                # Samples per analyser buffer

    # Calibration
    CALIBRATION_TIME_MS = 5000
    CALIBRATION_BREATH_MULTIPLIER = 1.2
    CALIBRATION_SILENCE_MULTIPLIER = 0.7
