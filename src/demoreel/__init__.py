# DemoReel-Headless: Offline demo reel renderer
# Package: src.demoreel

__version__ = "1.0.0-dev"
__author__ = "DemoReel Contributors"
__description__ = "Offline mixing engine that renders ordered tracks into a mastered demo reel"

# Module structure:
#   - demoreel.analyze    : Decoding and loudness measurement
#   - demoreel.generate   : Gain planning & timeline scheduling
#   - demoreel.render     : Mix bus, mastering compressor, encoders
#   - demoreel.context    : Per-render context (sample rate, bus, workers)
#   - demoreel.config     : Configuration management
#   - demoreel.errors     : Exception taxonomy
