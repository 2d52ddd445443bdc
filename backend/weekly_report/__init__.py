"""Weekly test report backend: spreadsheet statistics, cached AI analysis and report assembly."""
