"""
Shared building blocks for the localization core:
- types.py: ImageBuffer, Keypoint, DescriptorSet, Match
- buffers.py: BufferRegistry allocation counter and scoped buffer ownership
- logging_setup.py: JSON logging
- utils.py: loop diagnostics helpers
"""
