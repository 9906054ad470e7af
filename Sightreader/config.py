SR = 44100
MASTER_GAIN = 0.8

# Microphone capture
BUFFER_SIZE = 2048          # samples per analysed frame (~46ms at 44.1kHz)
SAMPLE_INTERVAL_MS = 10     # pitch sampler tick
MIN_VOLUME = 0.075          # RMS below this = silence
SILENCE = 0                 # detected-note sentinel

# YIN pitch estimation
YIN_THRESHOLD = 0.15
MIN_FREQ = 60.0
MAX_FREQ = 1200.0

# Note matcher tick (ms)
CHECK_INTERVAL_MS = 100

# Count-in before playing
COUNTDOWN_TICKS = 5
COUNTDOWN_TICK_S = 1.0
CLICK_HZ = 1000
ACCENT_HZ = 1500
CLICK_MS = 35

# Delay between a finished run and the automatic reset
RESET_DELAY_S = 0.1

# Tempo (quarter notes per minute)
DEFAULT_TEMPO = 60
TEMPO_CHOICES = (30, 60, 90, 120, 180, 240)

# Informational ABC header fields dropped before parsing
HEADER_KEYS_TO_IGNORE = {"T", "C", "Z", "S", "N", "G", "O", "H", "I", "P", "W", "F", "B"}

# Score statistics service
DEFAULT_PROFILE = "default"
STATS_TIMEOUT_S = 3.0

# MIDI scores: GM percussion lives on channel 10 (index 9) and is never a melody
DRUM_CHANNEL = 9

NOTE_NAMES = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]
