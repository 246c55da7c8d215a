"""WriteMyStory backend: life-story interviews, question generation and story previews."""
