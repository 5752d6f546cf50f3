"""
kioskcast: capture a live web page and publish it as an HLS stream.

Subsystems:
- audio: resolves the music directory into a looping concat audio input
- render: headless Chromium page + DevTools screencast frame capture
- encoder: FFmpeg process that muxes frames and audio into HLS segments
- bridge: forwards captured frames into the encoder in strict order
- supervisor: sequences startup and tears everything down on any fatal event
"""

__version__ = "0.1.0"
