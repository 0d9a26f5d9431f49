# Services sit between routers and the importer so routes stay free of pipeline wiring.
