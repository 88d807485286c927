"""
SPARQL Queries (extract side)

The pipeline reads the results of these queries from a SPARQL JSON results
file; running them against the R4D endpoint happens outside this package
(``python -m src.run_pipeline --print-query outputs`` prints the text).

Multi-valued fields are folded into one binding per output with
GROUP_CONCAT: space-separated for URIs and country codes, ``|`` for creator
names, which contain spaces.
"""

PREFIXES = """\
PREFIX dcterms: <http://purl.org/dc/terms/>
PREFIX bibo: <http://purl.org/ontology/bibo/>
PREFIX skos: <http://www.w3.org/2004/02/skos/core#>
PREFIX foaf: <http://xmlns.com/foaf/0.1/>
PREFIX r4d: <http://r4d.dfid.gov.uk/rdf/>
"""

OUTPUTS = PREFIXES + """
SELECT ?output ?title ?abstract ?date ?type ?citation ?peerReviewed
       (GROUP_CONCAT(DISTINCT ?countryCode; separator=" ") AS ?countryCodes)
       (GROUP_CONCAT(DISTINCT ?creatorName; separator="|") AS ?creators)
       (GROUP_CONCAT(DISTINCT ?theme; separator=" ") AS ?themes)
       (GROUP_CONCAT(DISTINCT ?uri; separator=" ") AS ?uris)
WHERE {
  ?output a bibo:Article ;
          dcterms:title ?title ;
          dcterms:date ?date .

  OPTIONAL { ?output dcterms:abstract ?abstract }
  OPTIONAL { ?output dcterms:type/skos:prefLabel ?type }
  OPTIONAL { ?output dcterms:bibliographicCitation ?citation }
  OPTIONAL { ?output bibo:status ?status .
             BIND(?status = <http://purl.org/ontology/bibo/status/peerReviewed> AS ?peerReviewed) }
  OPTIONAL { ?output dcterms:coverage/r4d:iso3166CountryCode ?countryCode }
  OPTIONAL { ?output dcterms:creator/foaf:name ?creatorName }
  OPTIONAL { ?output dcterms:subject ?theme .
             ?theme skos:inScheme <http://r4d.dfid.gov.uk/rdf/skos/Themes> }
  OPTIONAL { ?output bibo:uri ?uri }
}
GROUP BY ?output ?title ?abstract ?date ?type ?citation ?peerReviewed
ORDER BY ?output
"""

DOCUMENT_TYPES = PREFIXES + """
SELECT DISTINCT ?type ?prefLabel
WHERE {
  ?output dcterms:type ?type .

  ?type skos:inScheme <http://r4d.dfid.gov.uk/rdf/skos/DocumentTypes> ;
        skos:prefLabel ?prefLabel .
}
ORDER BY ?prefLabel
"""

QUERIES = {
    "outputs": OUTPUTS,
    "document-types": DOCUMENT_TYPES,
}
