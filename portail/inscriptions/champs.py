"""Libellés usuels des champs du formulaire d'inscription ISTM.

Les formulaires sont construits librement dans le back-office : on retrouve
une information (nom, téléphone...) par ses variantes de libellé.
"""

NOM = ("Nom", "nom")
POSTNOM = ("Post-Nom", "post-nom", "Post-nom")
PRENOM = ("Prénom", "prenom", "prénom")
EMAIL = ("E-mail", "email", "Email")
TELEPHONE = ("Téléphone", "telephone", "phone")
DATE_NAISSANCE = ("Date de naissance", "date-naissance", "date_naissance")
LIEU_NAISSANCE = ("Lieu de naissance", "lieu-naissance", "lieu_naissance")
SEXE = ("Sexe", "sexe")
ETAT_CIVIL = ("État civil", "etat-civil", "etat_civil")
NATIONALITE = ("Nationalité (Pays)", "nationalite", "Nationalité")
ADRESSE = ("Adresse Kinshasa", "adresse-kinshasa", "adresse_kinshasa", "adresse")
ECOLE = ("Nom de l'Ecole", "nom-ecole", "nom_ecole", "ecole", "Ecole", "École", "établissement", "etablissement")
PROVINCE_ECOLE = ("Province de l'Ecole", "province-ecole", "province_ecole", "province")
SECTION = ("Section suivie aux humanités", "section-humanites", "section_humanites", "section", "Option", "option")
ANNEE_OBTENTION = ("Année d'obtention", "annee-obtention", "annee_obtention", "annee", "Année", "année")
POURCENTAGE = ("Pourcentage", "pourcentage", "Score", "score")
