"""
Constants
Centralised storage for stage names, file names and the git zero sha.
"""
STAGE_ORDER = ["checkout", "install", "test", "build", "authenticate", "publish"]
ARROW = "→"
PIPELINE_FILE = "shipyard.yml"
GENERATED_DOCKERFILE = ".shipyard.Dockerfile"
ZERO_SHA = "0" * 40
BRANCH_REF_PREFIX = "refs/heads/"
IMAGE_LABEL_PREFIX = "org.shipyard"
SHORT_SHA_LENGTH = 12
