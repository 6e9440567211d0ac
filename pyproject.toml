[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "camstream"
version = "0.1.0"
description = "Building blocks for streaming H.264 video over RTSP/RTP: a frame queue, RTP packetisation, SDP and RTSP reply text"
requires-python = ">=3.10"
dependencies = []
keywords = ["rtsp", "rtp", "h264", "sdp", "streaming", "camera"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Video",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["camstream"]

[tool.pytest.ini_options]
addopts = "-ra"
