"""HTTP surface exposing history, analysis and calibration to UI collaborators."""
