from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Optional, Union

from settings.config import settings


def configure_logging(level: Optional[Union[int, str]] = None, json_output: Optional[bool] = None) -> None:
	level = level if level is not None else settings.LOG_LEVEL
	if isinstance(level, str):
		level = logging.getLevelName(level.upper())
	json_output = settings.LOG_JSON if json_output is None else json_output
	formatter = "json" if json_output else "standard"
	dictConfig(
		{
			"version": 1,
			"disable_existing_loggers": False,
			"formatters": {
				"standard": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
				"json": {"()": "pipeline.json_logger.JsonFormatter"},
			},
			"handlers": {
				"console": {
					"class": "logging.StreamHandler",
					"formatter": formatter,
					"level": level,
				}
			},
			"loggers": {
				"": {"handlers": ["console"], "level": level},
				"uvicorn": {"handlers": ["console"], "level": level},
				"arq": {"handlers": ["console"], "level": level},
				# pdfminer reports every malformed object at WARNING
				"pdfminer": {"level": logging.ERROR},
			},
		}
	)
