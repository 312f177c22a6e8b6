"""
Logging module for mrf_pipeline.

Import directly from sub-modules:
    from mrf_pipeline.common.logging.setup import get_logger, setup_logging
    from mrf_pipeline.common.logging.utilities import log_with_context
    from mrf_pipeline.common.logging.context import set_log_context
"""
