from .service import StoryLLM, writing_style_description

__all__ = ["StoryLLM", "writing_style_description"]
