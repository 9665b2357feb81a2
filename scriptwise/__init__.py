"""
Scriptwise — AppleScript Automation Intelligence

Risk gating, execution memory and failure analysis that sit between an
automation client and osascript.

Usage:
    from scriptwise.intelligence import get_intelligence

    brain = get_intelligence()
    outcome = brain.run("play my music", 'tell application "Music" to play')
"""

__version__ = "1.0.0"
